"""
RAG package.

  prompt.py        context selection and system prompt assembly
  orchestrator.py  embed → retrieve → prompt → fallback chain → persist
"""

from docuquery.rag.orchestrator import QueryOrchestrator, QueryResponse

__all__ = ["QueryOrchestrator", "QueryResponse"]
