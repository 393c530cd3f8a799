"""Adapters for LangChain, trace storage and tokenization."""

from semflow.adapters.langchain_model import LangChainModelService
from semflow.adapters.langchain_tools import LangChainToolService
from semflow.adapters.tokenizers import TiktokenTokenizer, Tokenizer, WhitespaceTokenizer
from semflow.adapters.trace_sinks import FileTraceSink, HttpTraceSink, ListTraceSink

__all__ = [
    "FileTraceSink",
    "HttpTraceSink",
    "LangChainModelService",
    "LangChainToolService",
    "ListTraceSink",
    "TiktokenTokenizer",
    "Tokenizer",
    "WhitespaceTokenizer",
]
