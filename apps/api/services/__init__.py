"""Service layer for the Chart Studio API (charts/gateway/storage).

Routers stay thin and delegate chart building, LLM access and file
decoding to this layer.
"""
