"""Active audience resolution."""

from .service import AudiencePolicy, AudienceResolver, ResolvedAudience, StrategyResult, cap_recipients

__all__ = ['AudiencePolicy', 'AudienceResolver', 'ResolvedAudience', 'StrategyResult', 'cap_recipients']
