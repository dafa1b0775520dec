"""Service layer: strategy status engine, alert and audit sinks"""
