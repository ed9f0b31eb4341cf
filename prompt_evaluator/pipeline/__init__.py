"""Evaluation pipeline: run a materialized meta-prompt over a dataset and grade it.

This package is independent of how runs are scheduled. The API submits runs to
its worker pool; run.py awaits them inline.

Key components:
- scoring: aggregate score, accuracy and the metrics bag
- runner: EvaluationPipeline, the per-evaluation state machine
"""
