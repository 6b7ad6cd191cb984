"""LLM - inference providers, prompts and response repair"""
