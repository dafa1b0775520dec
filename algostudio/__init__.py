"""AlgoStudio Strategy Status Engine"""
