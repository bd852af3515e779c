"""
Crawl Policy - Domain inclusion and navigation acceptance.

Decides which hosts the crawler may follow a navigation to:

1. Seed domains (and, optionally, their subdomains)
2. External domains matching an inclusion pattern and no exclusion pattern
3. Local ``file:`` URIs when explicitly enabled
"""

import re
from typing import Iterable, List, Optional, Pattern

import structlog

from .config import CrawlOptions
from .uri import host_of, scheme_of


class CrawlPolicy:
    """
    Domain policy shared by all workers of a crawl.

    Example:
        >>> policy = CrawlPolicy.from_seeds(["https://example.com/"], options)
        >>> policy.includes_domain("docs.example.com")
        True
        >>> policy.allows_navigation("mailto:someone@example.com")
        False
    """

    def __init__(
        self,
        seed_domains: Iterable[str],
        include_subdomains_of_seeds: bool = True,
        include_patterns: Optional[Iterable[str]] = None,
        exclude_patterns: Optional[Iterable[str]] = None,
        include_local_file_uris: bool = False,
    ):
        """
        Initialize the policy.

        Args:
            seed_domains: Hosts of the seed URLs
            include_subdomains_of_seeds: Accept ``*.seed`` hosts
            include_patterns: Full-match regexes for external hosts to include
            exclude_patterns: Full-match regexes vetoing an included external host
            include_local_file_uris: Accept ``file:`` navigations
        """
        self.seed_domains: List[str] = [d.lower() for d in seed_domains if d]
        self.include_subdomains_of_seeds = include_subdomains_of_seeds
        self.include_patterns: List[Pattern[str]] = [re.compile(p) for p in include_patterns or []]
        self.exclude_patterns: List[Pattern[str]] = [re.compile(p) for p in exclude_patterns or []]
        self.include_local_file_uris = include_local_file_uris

        self.logger = structlog.get_logger(__name__)

    @classmethod
    def from_seeds(cls, seed_urls: Iterable[str], options: CrawlOptions) -> "CrawlPolicy":
        """
        Build the policy from seed URLs and crawl options.

        Seeds without a parseable host are ignored.
        """
        seed_domains = []
        for url in seed_urls:
            host = host_of(url)
            if host and host not in seed_domains:
                seed_domains.append(host)

        return cls(
            seed_domains=seed_domains,
            include_subdomains_of_seeds=options.include_subdomains_of_seeds,
            include_patterns=options.include_external_domain_patterns,
            exclude_patterns=options.exclude_external_domain_patterns,
            include_local_file_uris=options.include_local_file_uris,
        )

    def includes_domain(self, domain: Optional[str]) -> bool:
        """
        Check whether a host is inside the crawl.

        Args:
            domain: Host name

        Returns:
            True if the host is a seed domain, an included subdomain of one,
            or an external domain matched by an inclusion pattern and not by
            any exclusion pattern
        """
        if not domain:
            return False

        domain = domain.lower()

        for seed_domain in self.seed_domains:
            if domain == seed_domain:
                return True
            if self.include_subdomains_of_seeds and domain.endswith(f".{seed_domain}"):
                return True

        for include in self.include_patterns:
            if include.fullmatch(domain):
                for exclude in self.exclude_patterns:
                    if exclude.fullmatch(domain):
                        self.logger.debug("domain_excluded", domain=domain, pattern=exclude.pattern)
                        return False
                return True

        return False

    def allows_navigation(self, url: str) -> bool:
        """
        Check whether a page the browser navigated to may be explored.

        Args:
            url: URL the browser landed on

        Returns:
            True for http(s) URLs on an included domain, or ``file:`` URLs
            when local files are enabled
        """
        scheme = scheme_of(url)

        if scheme in ("http", "https"):
            return self.includes_domain(host_of(url))
        if scheme == "file":
            return self.include_local_file_uris

        return False

    def accepts_seed(self, url: str) -> bool:
        """
        Check whether a seed URL can be crawled at all.

        Seeds are trusted regardless of domain; only their scheme is checked.
        """
        scheme = scheme_of(url)
        if scheme in ("http", "https"):
            return True
        return scheme == "file" and self.include_local_file_uris

    def __repr__(self) -> str:
        return (
            f"CrawlPolicy(seeds={self.seed_domains}, "
            f"subdomains={self.include_subdomains_of_seeds}, "
            f"include={len(self.include_patterns)}, exclude={len(self.exclude_patterns)})"
        )
