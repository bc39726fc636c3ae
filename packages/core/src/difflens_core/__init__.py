"""Context assembly and review-request pipeline for local code review."""
