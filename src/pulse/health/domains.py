"""Team key to domain lookups over TEAM_DOMAIN_MAPPINGS."""

from collections.abc import Mapping

__all__ = ["get_all_domains", "get_domain_for_team", "get_domain_teams"]


def get_domain_for_team(team_key: str, mappings: Mapping[str, str]) -> str | None:
    """Domain for ``team_key``; exact match first, then case-insensitive."""
    if team_key in mappings:
        return mappings[team_key]
    upper = team_key.upper()
    for key, domain in mappings.items():
        if key.upper() == upper:
            return domain
    return None


def get_domain_teams(domain: str, mappings: Mapping[str, str]) -> list[str]:
    return [key for key, mapped in mappings.items() if mapped == domain]


def get_all_domains(mappings: Mapping[str, str]) -> list[str]:
    """Distinct domains in first-seen order."""
    domains: list[str] = []
    for domain in mappings.values():
        if domain not in domains:
            domains.append(domain)
    return domains
