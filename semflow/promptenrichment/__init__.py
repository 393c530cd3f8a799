"""Prompt enrichment steps, pipeline and template."""

from semflow.promptenrichment.pipeline import (
    EnrichmentResult,
    EnrichmentStep,
    EnrichmentStepResult,
    FeatureStoreEnrichment,
    FunctionEnrichment,
    GraphEnrichment,
    MetricStoreEnrichment,
    PromptEnrichmentPipeline,
    SemanticSearchEnrichment,
    SqlEnrichment,
    append_context,
)
from semflow.promptenrichment.template import (
    CITATION_TOKEN_OVERHEAD,
    ContextBlock,
    PromptTemplate,
    fill_template,
    render_context_blocks,
    split_context_blocks,
    truncate_context,
)

__all__ = [
    "CITATION_TOKEN_OVERHEAD",
    "ContextBlock",
    "EnrichmentResult",
    "EnrichmentStep",
    "EnrichmentStepResult",
    "FeatureStoreEnrichment",
    "FunctionEnrichment",
    "GraphEnrichment",
    "MetricStoreEnrichment",
    "PromptEnrichmentPipeline",
    "PromptTemplate",
    "SemanticSearchEnrichment",
    "SqlEnrichment",
    "append_context",
    "fill_template",
    "render_context_blocks",
    "split_context_blocks",
    "truncate_context",
]
