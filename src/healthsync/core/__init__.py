"""
Core sync orchestration: job state, checkpoints, execution and admission.
"""
