"""
HTTP API for submitting and monitoring pipeline runs.
"""
