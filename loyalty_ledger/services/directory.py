"""
Lookups against collaborator-owned data: brands, member identities and
the reward catalog. All of these happen before any ledger lock is taken.
"""
import re
from typing import Optional

from flask import current_app

from ..extensions import cache
from ..models import Brand, RewardCatalogEntry
from ..utils.cache import cache_key
from ..utils.exceptions import BrandNotFoundError, RewardNotFoundError, ValidationError

EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


class BrandResolver:
    """Resolve a brand by id or by the storefront host it is served on."""

    def resolve(self, brand_id: str) -> Brand:
        if not brand_id or not isinstance(brand_id, str):
            raise ValidationError("brand_id is required", field='brand_id')

        brand = Brand.query.filter_by(id=brand_id, is_active=True).first()
        if not brand:
            raise BrandNotFoundError(brand_id)
        return brand

    def resolve_host(self, host: str) -> Brand:
        """
        Resolve a brand from a request host.

        The port is ignored and an ``api.`` prefix is stripped when the bare
        host is not a brand domain itself. Host -> brand_id mappings are
        cached; the brand row itself is always re-read.
        """
        domain = normalize_host(host)
        if not domain:
            raise ValidationError("host is required", field='host')

        key = cache_key('brand_host', host=domain)
        brand_id = cache.get(key)
        if brand_id is None:
            brand_id = self._lookup_domain(domain)
            if brand_id is None:
                raise BrandNotFoundError(domain)
            cache.set(key, brand_id, timeout=current_app.config.get('CONFIG_CACHE_TIMEOUT', 300))

        return self.resolve(brand_id)

    @staticmethod
    def _lookup_domain(domain: str) -> Optional[str]:
        candidates = [domain]
        if domain.startswith('api.'):
            candidates.append(domain[len('api.'):])

        for candidate in candidates:
            brand = Brand.query.filter_by(domain=candidate, is_active=True).first()
            if brand:
                return brand.id
        return None


def normalize_host(host: str) -> str:
    if not host:
        return ''
    return host.split(':', 1)[0].strip().lower()


class MemberDirectory:
    """Map a member identity (email) to its ledger member_key."""

    def normalize(self, email) -> str:
        if not isinstance(email, str) or not email.strip():
            raise ValidationError("member email is required", field='member')

        member_key = email.strip().lower()
        if len(member_key) > 255 or not EMAIL_PATTERN.match(member_key):
            raise ValidationError(f"Invalid member email: {email!r}", field='member')
        return member_key


class RewardCatalog:
    """Read-only access to a brand's reward catalog."""

    def __init__(self, brand_id: str):
        self.brand_id = brand_id

    def get_active(self, reward_id: str) -> RewardCatalogEntry:
        reward = RewardCatalogEntry.query.filter_by(
            brand_id=self.brand_id,
            reward_id=reward_id,
        ).first()
        if not reward or not reward.active:
            raise RewardNotFoundError(reward_id)
        return reward
