"""Pustakam: AI book generation with checkpointed, resumable runs."""
