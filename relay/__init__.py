"""
SyncWatch relay - shared playback state for one room
"""
