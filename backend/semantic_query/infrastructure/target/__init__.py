"""Adapters for the customer's analytics (target) database."""

from .information_schema_source import InformationSchemaColumnSource, information_schema_source_factory
from .sqlalchemy_query_executor import SQLAlchemyQueryExecutor

__all__ = [
    "InformationSchemaColumnSource",
    "information_schema_source_factory",
    "SQLAlchemyQueryExecutor",
]
