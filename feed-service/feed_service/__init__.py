"""
Community Feed Service - keyset-paged feed, ranking, suggestions and realtime chat
"""
