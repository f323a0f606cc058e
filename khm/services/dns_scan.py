"""
DNS resolution check for the servers of a flow.

Helps operators spot entries for hosts that no longer exist before deprecating
them. Lookups go through the system resolver.
"""
import asyncio
import logging
from typing import Iterable

from khm.schemas import DnsResolutionResult, DnsScanResponse

logger = logging.getLogger(__name__)


def lookup_name(server: str) -> str:
    """
    Name to resolve for a known_hosts server field.

    ``host,10.0.0.1`` resolves ``host``; ``[host]:2222`` resolves ``host``.
    """
    name = server.split(",", 1)[0]
    if name.startswith("[") and "]" in name:
        name = name[1:name.index("]")]
    return name


async def check_dns_resolution(
    server: str,
    semaphore: asyncio.Semaphore,
    timeout: float = 5.0
) -> DnsResolutionResult:
    async with semaphore:
        loop = asyncio.get_running_loop()
        try:
            await asyncio.wait_for(loop.getaddrinfo(lookup_name(server), None), timeout)
        except asyncio.TimeoutError:
            return DnsResolutionResult(
                server=server, resolved=False, error=f"DNS lookup timeout ({timeout:g}s)"
            )
        except OSError as e:
            return DnsResolutionResult(server=server, resolved=False, error=str(e))
        except UnicodeError as e:
            return DnsResolutionResult(server=server, resolved=False, error=f"Invalid hostname: {e}")
    return DnsResolutionResult(server=server, resolved=True)


async def scan_dns_resolution(
    servers: Iterable[str],
    concurrency: int = 20,
    timeout: float = 5.0
) -> DnsScanResponse:
    """Resolve every unique server name, at most ``concurrency`` lookups at a time."""
    unique = sorted(set(servers))
    logger.info(f"Scanning DNS resolution for {len(unique)} unique hosts")

    # Limit concurrent lookups to avoid exhausting file descriptors
    semaphore = asyncio.Semaphore(concurrency)
    results = await asyncio.gather(
        *(check_dns_resolution(server, semaphore, timeout) for server in unique)
    )

    unresolved = sum(1 for r in results if not r.resolved)
    logger.info(f"DNS scan complete: {unresolved} unresolved out of {len(results)} hosts")
    return DnsScanResponse(results=list(results), total=len(results), unresolved=unresolved)
