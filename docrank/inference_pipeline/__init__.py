"""
Inference pipeline for docrank.
Gateway to the Ollama service, embeddings, relevance prompts and the HTTP API.
"""
