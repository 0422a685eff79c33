"""Data store package for donorscope.

SQL-backed persistence for the roster, the processing queue, checkpoints, final
records and the optional bulk detail tables.
"""
