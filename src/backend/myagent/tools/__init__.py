"""Report synthesis and document renderers."""
