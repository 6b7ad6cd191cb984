"""Insights domain - models, fingerprints, heuristics and the enrichment orchestrator"""
