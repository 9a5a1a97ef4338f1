"""
Tests del resolvedor de merchants canonicos.
"""
import pytest

from possync.application.services.merchant_resolver import MerchantResolver
from possync.domain.entities.pos import PosConfig


@pytest.fixture
def pos_config() -> PosConfig:
    return PosConfig(id=7, merchant_id="M-EXT-1", merchant_name="Sucursal Centro", api_token="t")


class TestMerchantResolver:

    @pytest.mark.asyncio
    async def test_creates_merchant_with_defaults(self, store, pos_config):
        merchant = await MerchantResolver(store).resolve(pos_config)

        assert merchant.id is not None
        assert merchant.external_id == "M-EXT-1"
        assert merchant.channel == "clover"
        assert merchant.name == "Sucursal Centro"
        assert merchant.country == "US"
        assert merchant.timezone == "America/Chicago"
        assert merchant.currency == "USD"
        assert merchant.is_active is True
        assert merchant.settings == {"pos_config_id": 7}

    @pytest.mark.asyncio
    async def test_repeated_resolution_returns_same_merchant(self, store, pos_config):
        resolver = MerchantResolver(store)

        first = await resolver.resolve(pos_config)
        second = await resolver.resolve(pos_config)

        assert first.id == second.id

    @pytest.mark.asyncio
    async def test_name_falls_back_to_external_id(self, store):
        config = PosConfig(id=8, merchant_id="M-EXT-2", merchant_name="", api_token="t")

        merchant = await MerchantResolver(store).resolve(config)

        assert merchant.name == "M-EXT-2"

    @pytest.mark.asyncio
    async def test_channel_separates_identities(self, store, pos_config):
        clover = await MerchantResolver(store).resolve(pos_config)
        other = await MerchantResolver(store, channel="square").resolve(pos_config)

        assert clover.id != other.id
        assert other.channel == "square"
