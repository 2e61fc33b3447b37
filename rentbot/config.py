"""Application configuration via environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


DEFAULT_SUBURBS = [
    "Avondale",
    "Borrowdale",
    "Mount Pleasant",
    "Belgravia",
    "Greendale",
    "Highlands",
    "Marlborough",
    "Waterfalls",
    "Warren Park",
    "Kuwadzana",
    "Budiriro",
    "Chitungwiza",
]


class Settings(BaseSettings):
    # Twilio (WhatsApp)
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_whatsapp_from: str = ""
    twilio_flow_sid: str = ""

    # Messaging provider: "twilio" or "whatchimp"
    messaging_provider: str = "twilio"
    whatchimp_access_token: str = ""
    whatchimp_api_url: str = ""

    # MongoDB (empty URI → in-memory store, local dev only)
    mongodb_uri: str = ""
    mongodb_db_name: str = "rentbot"

    # Paynow Express
    paynow_integration_id: str = ""
    paynow_integration_key: str = ""
    paynow_email: str = "customer@rentbot.co.zw"
    paynow_test_mode: bool = False

    # Public URL used for webhook signature checks and payment callbacks
    public_base_url: str = "http://localhost:8080"

    # Admin auth
    admin_api_key: str = ""

    # Server
    host: str = "127.0.0.1"
    port: int = 8080
    debug: bool = False

    # Credits & pricing
    starting_credits: int = 3
    search_cost: int = 1
    photo_cost: int = 2
    listing_publish_price: float = 3.0
    credit_bundles: dict[str, float] = {"10": 1.0, "30": 2.5, "100": 7.0}

    # Rate limits
    search_day_limit: int = 200
    photo_day_limit: int = 5
    throttle_seconds: int = 60

    # Conversation sessions
    session_ttl_hours: float = 24.0

    # Listings
    suburbs: list[str] = DEFAULT_SUBURBS
    max_photo_attachments: int = 3
    search_result_limit: int = 10

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    def validate_startup(self) -> list[str]:
        """Validate configuration at startup. Returns warnings, raises on errors."""
        warnings: list[str] = []
        _placeholders = {"AC...", "your-token", "changeme"}

        if self.messaging_provider not in ("twilio", "whatchimp"):
            raise ValueError(
                f"MESSAGING_PROVIDER must be 'twilio' or 'whatchimp', got {self.messaging_provider!r}."
            )

        if not self.suburbs:
            raise ValueError("SUBURBS must list at least one suburb.")

        # Twilio signature checks need the auth token outside debug mode
        if not self.twilio_auth_token or self.twilio_auth_token in _placeholders:
            if self.debug:
                warnings.append(
                    "TWILIO_AUTH_TOKEN not set. Webhook signatures are not checked (DEBUG=true)."
                )
            else:
                raise ValueError(
                    "TWILIO_AUTH_TOKEN is missing or still a placeholder. "
                    "Set it in .env to accept WhatsApp webhooks."
                )

        if self.messaging_provider == "whatchimp" and not (
            self.whatchimp_access_token and self.whatchimp_api_url
        ):
            warnings.append(
                "WHATCHIMP_ACCESS_TOKEN / WHATCHIMP_API_URL not set; outbound messages will fail."
            )

        if not self.mongodb_uri:
            warnings.append(
                "MONGODB_URI not set. Using the in-memory store; data is lost on restart."
            )

        if not self.paynow_integration_id or not self.paynow_integration_key:
            warnings.append("Paynow credentials missing; BUY will report payment errors.")
        elif self.paynow_test_mode:
            warnings.append("PAYNOW_TEST_MODE is on; magic test numbers are simulated.")

        # Admin API key
        if not self.admin_api_key:
            if self.debug:
                warnings.append(
                    "ADMIN_API_KEY not set. Admin APIs are open (DEBUG=true)."
                )
            else:
                warnings.append(
                    "ADMIN_API_KEY not set. Admin APIs are locked in production. "
                    "Set ADMIN_API_KEY in .env to enable admin access."
                )

        return warnings


settings = Settings()
