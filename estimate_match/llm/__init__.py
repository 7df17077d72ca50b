"""
LLM Module
==========

External semantic matcher: prompt construction, model clients and
response validation.
"""
