"""
SyncWatch client agent - keeps a page video in step with the relay
"""
