from docuquery.vectorstore.base import QueryFilter, QueryResult, VectorIndexBase, VectorRecord
from docuquery.vectorstore.factory import get_vector_index

__all__ = ["VectorIndexBase", "VectorRecord", "QueryResult", "QueryFilter", "get_vector_index"]
