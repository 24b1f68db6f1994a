"""Language model integration package.

Token estimation, model limits, the error taxonomy, and LangChain-based
providers implementing ``call_inference``.
"""
