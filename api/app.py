"""
REST API
========
The HTTP surface the React frontend talks to. Everything lives under /api:

- /api/auth/*    signup, login, profile, token check
- /api/wallet/*  balance, withdrawals, deposit address, ledger
- /api/bot/*     bot configuration, start/stop/reset, stats, token listings
- /api/health    liveness

Protected routes need "Authorization: Bearer <token>". Errors always come
back as {"error": "..."}.

On startup the app opens the database, wires the services, resumes bots that
were running before the restart, and starts the token feed refresh loop.

Run with:
    python main.py
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
import random

import aiohttp
import uvicorn
from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from accounts.service import AccountService
from api.auth import get_current_user_id
from api.schemas import (
    BotConfigUpdate,
    LoginRequest,
    ProfileUpdate,
    RegisterRequest,
    ValidateAddressRequest,
    WithdrawRequest,
)
from config.settings import Settings, settings as default_settings
from database.db import Database
from discovery.pumpfun_client import PumpFunClient
from discovery.token_feed import TokenFeed
from discovery.token_filter import TokenFilter
from monitor.signal_generator import SignalGenerator
from trader.bot_engine import BotEngine
from trader.bot_manager import BotManager
from trader.safety_rails import SafetyRails
from trader.trade_simulator import TradeSimulator
from utils.errors import SpinnerBotError, ValidationError
from utils.logger import get_logger
from utils.security import SecurityManager
from utils.solana_client import SolanaClient
from wallet.wallet_service import WalletService

logger = get_logger(__name__)

API_VERSION = "1.0.0"


@dataclass
class Services:
    settings: Settings
    db: Database
    solana: SolanaClient
    security: SecurityManager
    wallet: WalletService
    accounts: AccountService
    token_filter: TokenFilter
    feed: TokenFeed
    bots: BotManager


def build_services(
    settings: Settings,
    db: Database,
    solana: SolanaClient,
    feed_client: PumpFunClient,
    rng: random.Random | None = None,
) -> Services:
    """Wire every service together around already-open connections."""
    security = SecurityManager(settings)
    wallet = WalletService(settings, db, solana, security)
    token_filter = TokenFilter(settings)
    feed = TokenFeed(settings, db, feed_client, token_filter)
    rails = SafetyRails()
    engine = BotEngine(
        settings, db, feed, SignalGenerator(token_filter), TradeSimulator(rng=rng), rails
    )
    return Services(
        settings=settings,
        db=db,
        solana=solana,
        security=security,
        wallet=wallet,
        accounts=AccountService(settings, db, security, wallet),
        token_filter=token_filter,
        feed=feed,
        bots=BotManager(settings, db, engine, wallet, rails, rng=rng),
    )


def _format_token(token: dict, score: int) -> dict:
    return {
        "mint": token["mint"],
        "name": token["name"],
        "symbol": token["symbol"],
        "description": token.get("description"),
        "image": token.get("image"),
        "market_cap": token.get("market_cap"),
        "price": token.get("price"),
        "liquidity": token.get("liquidity"),
        "volume_24h": token.get("volume_24h"),
        "holders": token.get("holders"),
        "is_launched": token.get("is_launched"),
        "launched_at": token.get("launched_at"),
        "creator": token.get("creator"),
        "score": score,
        "created_at": token.get("created_at"),
    }


def _token_listing(tokens: list[dict]) -> dict:
    return {
        "tokens": tokens,
        "count": len(tokens),
        "last_updated": datetime.now(timezone.utc).isoformat(),
    }


def create_app(
    settings: Settings | None = None,
    *,
    solana: SolanaClient | None = None,
    feed_client: PumpFunClient | None = None,
    rng: random.Random | None = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    `solana` and `feed_client` replace the real RPC / pump.fun clients
    (tests pass fakes); when omitted they are created and closed here.
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db = Database(settings.db_path)
        await db.initialize()

        rpc = solana
        if rpc is None:
            rpc = SolanaClient(settings)
            await rpc.initialize()

        http_session = None
        client = feed_client
        if client is None:
            http_session = aiohttp.ClientSession()
            client = PumpFunClient(
                settings.pumpfun_api_url,
                http_session,
                timeout=settings.feed_timeout_seconds,
                coin_timeout=settings.coin_timeout_seconds,
            )

        services = build_services(settings, db, rpc, client, rng=rng)
        app.state.services = services

        for problem in settings.validate():
            logger.warning("config_issue", issue=problem)

        await services.bots.reconcile()
        if settings.token_refresh_enabled:
            services.feed.start()
        logger.info("api_started", network=settings.solana_network, demo_mode=settings.demo_mode)

        try:
            yield
        finally:
            logger.info("api_shutting_down")
            await services.feed.stop()
            await services.bots.stop_all()
            if solana is None:
                await rpc.close()
            if http_session is not None:
                await http_session.close()
            await db.close()

    app = FastAPI(title="Spinner Bot API", version=API_VERSION, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # =========================================================================
    # Error handling
    # =========================================================================

    @app.exception_handler(SpinnerBotError)
    async def handle_app_error(request: Request, exc: SpinnerBotError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def handle_bad_request(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        if errors:
            first = errors[0]
            field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
            message = f"{field}: {first.get('msg')}" if field else first.get("msg")
        else:
            message = "Invalid request"
        return JSONResponse(status_code=400, content={"error": message})

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.error("request_failed", path=request.url.path, error=str(exc), type=type(exc).__name__)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    def services_of(request: Request) -> Services:
        return request.app.state.services

    # =========================================================================
    # Service info
    # =========================================================================

    @app.get("/api/health")
    async def health():
        return {
            "status": "OK",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "network": settings.solana_network,
        }

    @app.get("/api")
    async def info():
        return {
            "name": "Spinner Bot API",
            "version": API_VERSION,
            "endpoints": {
                "auth": "/api/auth",
                "wallet": "/api/wallet",
                "bot": "/api/bot",
                "health": "/api/health",
            },
        }

    # =========================================================================
    # Auth
    # =========================================================================

    @app.post("/api/auth/register", status_code=201)
    async def register(body: RegisterRequest, services: Services = Depends(services_of)):
        token, user = await services.accounts.register(body.email, body.password, body.username)
        return {"message": "User created successfully", "token": token, "user": user}

    @app.post("/api/auth/login")
    async def login(body: LoginRequest, services: Services = Depends(services_of)):
        token, user = await services.accounts.login(body.email, body.password)
        return {"message": "Login successful", "token": token, "user": user}

    @app.get("/api/auth/profile")
    async def get_profile(
        user_id: int = Depends(get_current_user_id), services: Services = Depends(services_of)
    ):
        return {"user": await services.accounts.get_profile(user_id)}

    @app.put("/api/auth/profile")
    async def update_profile(
        body: ProfileUpdate,
        user_id: int = Depends(get_current_user_id),
        services: Services = Depends(services_of),
    ):
        user = await services.accounts.update_profile(user_id, body.username)
        return {"message": "Profile updated successfully", "user": user}

    @app.get("/api/auth/verify")
    async def verify(user_id: int = Depends(get_current_user_id), services: Services = Depends(services_of)):
        return {"valid": True, "user": await services.accounts.verify(user_id)}

    # =========================================================================
    # Wallet
    # =========================================================================

    @app.get("/api/wallet/balance")
    async def wallet_balance(
        user_id: int = Depends(get_current_user_id), services: Services = Depends(services_of)
    ):
        return await services.wallet.balance_info(user_id)

    @app.post("/api/wallet/withdraw")
    async def withdraw(
        body: WithdrawRequest,
        user_id: int = Depends(get_current_user_id),
        services: Services = Depends(services_of),
    ):
        receipt = await services.wallet.withdraw_with_fee(user_id, body.to_address, body.amount)
        new_balance = receipt.pop("new_balance")
        receipt["timestamp"] = datetime.now(timezone.utc).isoformat()
        return {"message": "Withdrawal completed", "transaction": receipt, "new_balance": new_balance}

    @app.get("/api/wallet/deposit-address")
    async def deposit_address(
        user_id: int = Depends(get_current_user_id), services: Services = Depends(services_of)
    ):
        return await services.wallet.deposit_info(user_id)

    @app.post("/api/wallet/validate-address")
    async def validate_address(
        body: ValidateAddressRequest,
        user_id: int = Depends(get_current_user_id),
        services: Services = Depends(services_of),
    ):
        if not body.address:
            raise ValidationError("Address is required")
        is_valid = services.wallet.is_valid_address(body.address)
        return {
            "address": body.address,
            "is_valid": is_valid,
            "message": "Valid address" if is_valid else "Invalid address",
        }

    @app.get("/api/wallet/transactions")
    async def list_transactions(
        page: int = Query(1, ge=1),
        limit: int = Query(20, ge=1, le=100),
        tx_type: str | None = Query(None, alias="type"),
        user_id: int = Depends(get_current_user_id),
        services: Services = Depends(services_of),
    ):
        return await services.wallet.list_transactions(user_id, page=page, limit=limit, tx_type=tx_type)

    @app.get("/api/wallet/transactions/{signature}")
    async def get_transaction(
        signature: str,
        user_id: int = Depends(get_current_user_id),
        services: Services = Depends(services_of),
    ):
        return {"transaction": await services.wallet.get_transaction(user_id, signature)}

    # =========================================================================
    # Bot
    # =========================================================================

    @app.get("/api/bot/config")
    async def get_bot_config(
        user_id: int = Depends(get_current_user_id), services: Services = Depends(services_of)
    ):
        config = await services.bots.get_config(user_id)
        return {"bot": config.to_dict()}

    @app.put("/api/bot/config")
    async def update_bot_config(
        body: BotConfigUpdate,
        user_id: int = Depends(get_current_user_id),
        services: Services = Depends(services_of),
    ):
        updates = body.model_dump(mode="json", exclude_none=True)
        config = await services.bots.update_config(user_id, updates)
        return {"message": "Configuration updated successfully", "bot": config.to_dict()}

    @app.post("/api/bot/start")
    async def start_bot(user_id: int = Depends(get_current_user_id), services: Services = Depends(services_of)):
        await services.bots.start(user_id)
        return {"message": "Bot started successfully", "bot_started": True}

    @app.post("/api/bot/stop")
    async def stop_bot(user_id: int = Depends(get_current_user_id), services: Services = Depends(services_of)):
        await services.bots.stop(user_id)
        return {"message": "Bot stopped successfully", "bot_stopped": True}

    @app.post("/api/bot/reset")
    async def reset_bot(user_id: int = Depends(get_current_user_id), services: Services = Depends(services_of)):
        config = await services.bots.reset(user_id)
        return {
            "message": "Trades reset successfully",
            "bot": {
                "current_trades": config.current_trades,
                "total_profit": config.total_profit,
                "total_loss": config.total_loss,
            },
        }

    @app.get("/api/bot/stats")
    async def bot_stats(user_id: int = Depends(get_current_user_id), services: Services = Depends(services_of)):
        return {"stats": await services.bots.stats(user_id)}

    @app.get("/api/bot/tokens/recommended")
    async def recommended_tokens(
        limit: int = Query(10, ge=1, le=100),
        user_id: int = Depends(get_current_user_id),
        services: Services = Depends(services_of),
    ):
        tokens = await services.feed.get_recommended_tokens(limit)
        return _token_listing([_format_token(t, t["score"]) for t in tokens])

    @app.get("/api/bot/tokens/new")
    async def new_tokens(
        limit: int = Query(20, ge=1, le=100),
        user_id: int = Depends(get_current_user_id),
        services: Services = Depends(services_of),
    ):
        tokens = await services.feed.get_new_tokens(limit)
        return _token_listing([_format_token(t, services.token_filter.score_token(t)) for t in tokens])

    @app.get("/api/bot/tokens/hot")
    async def hot_tokens(
        limit: int = Query(20, ge=1, le=100),
        user_id: int = Depends(get_current_user_id),
        services: Services = Depends(services_of),
    ):
        tokens = await services.feed.get_hot_tokens(limit)
        return _token_listing([_format_token(t, services.token_filter.score_token(t)) for t in tokens])

    return app


def run_server(settings: Settings | None = None) -> None:
    """Launch the API server (blocking)."""
    settings = settings or default_settings
    uvicorn.run(create_app(settings), host=settings.api_host, port=settings.api_port, log_level="info")
