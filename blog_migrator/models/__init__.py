from .post import MigrationOutcome, MigrationSummary, NormalizedPost, SourcePost

__all__ = ["MigrationOutcome", "MigrationSummary", "NormalizedPost", "SourcePost"]
