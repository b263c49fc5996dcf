"""
schemas/ - Pydantic models for LeadMiner

Request/response bodies for the HTTP API and validated shapes for every
external provider response, so pipeline code never branches on raw JSON.
"""
