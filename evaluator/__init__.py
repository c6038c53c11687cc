"""
Solution Evaluator: Automated Grading of Compiled Solutions

A grading pipeline that compiles each student solution, runs it against
input/output test cases under a time limit, checks the source against
pattern-based rules and aggregates everything into one score per solution.
"""

__version__ = "0.1.0"
