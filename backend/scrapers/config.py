"""
Site configurations for listing sources.

Each site has a SiteConfig that defines:
- Search and base URLs
- Scraper type (javascript, stealth)
- Rate limiting and enabled status
"""

from .base import SiteConfig, ScraperType


# ============================================================
# SITE CONFIGURATIONS
# ============================================================

SITES = {
    'zillow': SiteConfig(
        name='Zillow',
        short_name='zillow',
        search_url='https://www.zillow.com/homes/',
        base_url='https://www.zillow.com',
        scraper_type=ScraperType.STEALTH,
        rate_limit_seconds=2.0,
        enabled=True,
    ),
}


# ============================================================
# HELPER FUNCTIONS
# ============================================================

def get_site_config(site_key: str) -> SiteConfig:
    """
    Get configuration for a site by its key.

    Args:
        site_key: Site identifier (e.g., 'zillow')

    Returns:
        SiteConfig for the site

    Raises:
        ValueError: If site_key is not found
    """
    if site_key not in SITES:
        valid_keys = ', '.join(sorted(SITES.keys()))
        raise ValueError(f"Unknown site: '{site_key}'. Valid sites: {valid_keys}")
    return SITES[site_key]


def get_enabled_sites() -> dict:
    """Get all enabled sites."""
    return {k: v for k, v in SITES.items() if v.enabled}


def get_site_summary() -> list:
    """Get a summary of all sites for display."""
    summary = []
    for key, config in SITES.items():
        summary.append({
            'key': key,
            'name': config.name,
            'short_name': config.short_name,
            'type': config.scraper_type.value,
            'enabled': config.enabled,
            'url': config.search_url,
        })
    return summary
