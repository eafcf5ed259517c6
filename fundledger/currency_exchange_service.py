# currency_exchange_service.py
# IQD/USD conversion for display and reporting, backed by FastForex with a stored static-rate fallback

from typing import Optional
import asyncio
import logging

import aiohttp
from sqlalchemy.ext.asyncio import AsyncSession

from . import crud, models, schemas
from .actor import Actor
from .config import settings
from .errors import ExternalServiceError, ValidationError
from .period_calendar import utcnow

log = logging.getLogger(__name__)

_CURRENCY_SYMBOLS = {"USD": "$"}


class CurrencyExchangeService:
    """System currency settings and exchange rates"""

    @staticmethod
    async def get_settings(db: AsyncSession) -> models.SystemSettings:
        """Return the single settings row, creating it with defaults on first read"""
        system_settings = await crud.get_system_settings(db)
        if system_settings is None:
            system_settings = models.SystemSettings(
                default_currency=settings.DEFAULT_CURRENCY,
                display_currency=settings.DEFAULT_CURRENCY,
                auto_convert_currency=False,
                usd_to_iqd=settings.USD_TO_IQD_RATE,
                iqd_to_usd=1 / settings.USD_TO_IQD_RATE,
            )
            db.add(system_settings)
            await crud.commit(db)
            await db.refresh(system_settings)
            log.info("System settings initialised with defaults")
        return system_settings

    @staticmethod
    async def update_exchange_rate(
        db: AsyncSession,
        usd_to_iqd: float,
        actor: Actor,
    ) -> models.SystemSettings:
        if usd_to_iqd <= 0:
            raise ValidationError("Exchange rate must be positive", {"usd_to_iqd": usd_to_iqd})

        system_settings = await CurrencyExchangeService.get_settings(db)
        system_settings.usd_to_iqd = usd_to_iqd
        system_settings.iqd_to_usd = 1 / usd_to_iqd
        system_settings.last_rate_update = utcnow()
        system_settings.updated_by = actor.id
        await crud.commit(db)

        log.info(f"Exchange rate updated: 1 USD = {usd_to_iqd} IQD by {actor}")
        return system_settings

    @staticmethod
    async def update_settings(
        db: AsyncSession,
        data: schemas.SystemSettingsUpdate,
        actor: Actor,
    ) -> models.SystemSettings:
        """Apply the given display preferences; omitted fields keep their value"""
        system_settings = await CurrencyExchangeService.get_settings(db)
        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        for key, value in changes.items():
            setattr(system_settings, key, value)
        system_settings.updated_by = actor.id
        await crud.commit(db)

        log.info(f"System settings updated by {actor}: {changes}")
        return system_settings

    @staticmethod
    def format_currency(amount: float, currency: str) -> str:
        """USD with cents, IQD in whole dinars, both with thousands separators"""
        digits = 2 if currency == "USD" else 0
        return f"{amount:,.{digits}f} {_CURRENCY_SYMBOLS.get(currency, currency)}"

    @staticmethod
    async def get_display_amount(db: AsyncSession, amount: float, currency: str) -> dict:
        """
        Present an amount the way the system settings ask for.

        Amounts already in the default currency are shown as is unless
        auto_convert_currency is on; anything else is converted to the
        default currency with the stored rates. With display_currency
        BOTH the original figure is kept alongside.
        """
        system_settings = await CurrencyExchangeService.get_settings(db)
        target = system_settings.default_currency
        if not system_settings.auto_convert_currency and currency == target:
            return {
                "amount": amount,
                "currency": currency,
                "display_text": CurrencyExchangeService.format_currency(amount, currency),
            }

        converted = CurrencyExchangeService.convert_with_rates(amount, currency, target, system_settings)
        display_text = CurrencyExchangeService.format_currency(converted, target)
        result = {"amount": converted, "currency": target, "display_text": display_text}
        if system_settings.display_currency == "BOTH":
            result.update({
                "original_amount": amount,
                "original_currency": currency,
                "display_text": f"{display_text} ({CurrencyExchangeService.format_currency(amount, currency)})",
            })
        return result

    @staticmethod
    def convert_with_rates(amount: float, from_currency: str, to_currency: str, system_settings: models.SystemSettings) -> float:
        """Local conversion using the stored rates"""
        if from_currency == to_currency:
            return amount
        if (from_currency, to_currency) == ("USD", "IQD"):
            return amount * system_settings.usd_to_iqd
        if (from_currency, to_currency) == ("IQD", "USD"):
            return amount * system_settings.iqd_to_usd
        raise ValidationError(f"Unsupported conversion {from_currency} -> {to_currency}")

    @staticmethod
    async def _fetch_json(path: str, params: dict) -> dict:
        """
        GET a FastForex endpoint.

        Raises:
            ExternalServiceError: missing API key, HTTP error, timeout or non-JSON body
        """
        if not settings.FASTFOREX_API_KEY:
            raise ExternalServiceError("FastForex API key is not configured")

        url = f"{settings.FASTFOREX_BASE_URL.rstrip('/')}/{path}"
        timeout = aiohttp.ClientTimeout(total=settings.FX_TIMEOUT_SECONDS)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url, params={**params, "api_key": settings.FASTFOREX_API_KEY}) as response:
                    if response.status == 429:
                        raise ExternalServiceError("FastForex rate limit exceeded", {"status": response.status})
                    if response.status != 200:
                        raise ExternalServiceError(f"FastForex API error: {response.status}", {"status": response.status})
                    return await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise ExternalServiceError(f"FastForex request failed: {e}") from e

    @staticmethod
    async def convert(
        db: AsyncSession,
        amount: float,
        from_currency: str,
        to_currency: str,
    ) -> dict:
        """
        Convert an amount for display.

        Uses FastForex /convert; any remote failure falls back to the stored
        static rate, so this never raises for supported currencies.

        Returns:
            {"original_amount", "from_currency", "to_currency", "converted_amount", "source"}
        """
        result = {"original_amount": amount, "from_currency": from_currency, "to_currency": to_currency}
        if from_currency == to_currency:
            return {**result, "converted_amount": amount, "source": "identity"}

        try:
            data = await CurrencyExchangeService._fetch_json(
                "convert", {"from": from_currency, "to": to_currency, "amount": amount}
            )
            converted = (data.get("result") or {}).get(to_currency)
            if converted is None:
                raise ExternalServiceError("FastForex returned an invalid response")
            return {**result, "converted_amount": float(converted), "source": "fastforex"}
        except ExternalServiceError as e:
            log.warning(f"FastForex conversion failed, falling back to stored rate: {e}")

        system_settings = await CurrencyExchangeService.get_settings(db)
        converted = CurrencyExchangeService.convert_with_rates(amount, from_currency, to_currency, system_settings)
        return {**result, "converted_amount": converted, "source": "static"}

    @staticmethod
    async def fetch_latest_rate(db: AsyncSession, actor: Actor) -> dict:
        """
        Pull the current USD -> IQD rate from FastForex and store it.

        Raises:
            ExternalServiceError: the remote lookup failed
        """
        data = await CurrencyExchangeService._fetch_json("fetch-one", {"from": "USD", "to": "IQD"})
        rate: Optional[float] = (data.get("result") or {}).get("IQD")
        if not rate:
            raise ExternalServiceError("FastForex returned an invalid response", {"body": data})

        system_settings = await CurrencyExchangeService.update_exchange_rate(db, float(rate), actor)
        return {"rate": float(rate), "settings": system_settings}
