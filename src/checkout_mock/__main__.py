import argparse
import logging
import sys

import uvicorn

from checkout_mock import __version__
from checkout_mock.config import load_config
from checkout_mock.observability import CorrelationIdFilter


def _run_demo_checkout(args: argparse.Namespace, base_url: str) -> int:
    """Walk one order through the gateway at ``base_url`` and print each step."""
    from checkout_mock.checkout import CheckoutFlow
    from checkout_mock.client import CardFields, ChallengeRequired, ChallengeVerified, PaymentClient
    from checkout_mock.errors import CheckoutError
    from checkout_mock.session import PaymentSession

    with PaymentClient(base_url=base_url) as client:
        flow = CheckoutFlow(client, PaymentSession(), redirect_delay=0)
        try:
            cards = {card.fullNumber: card for card in client.list_test_cards()}
            card = cards.get(args.card)
            if card is None:
                print(f"Unknown test card {args.card}; choose one of: {', '.join(cards)}")
                return 2

            order = flow.start(args.product, args.amount, args.email)
            print(f"Order {order.order_id} created, payment {order.payment_id}")

            outcome = flow.submit_card(CardFields.from_test_card(card))
            if not isinstance(outcome, ChallengeRequired):
                print(f"Authorization did not require 3DS: {outcome}")
                return 1
            print(f"3D Secure required by {outcome.bank_name}")

            result = flow.submit_code(args.otp)
            if isinstance(result, ChallengeVerified):
                print(f"Payment captured, provider reference {result.provider_reference}")
                return 0
            print(f"Verification failed: {result.code} {result.reason}")
            return 1
        except CheckoutError as e:
            print(f"Checkout failed [{e.error_code}]: {e.message}")
            return 1


def main() -> None:
    config = load_config()
    server_config = config["server"]
    gateway_port = int(server_config["gateway_port"])
    logging.basicConfig(level=logging.INFO, format=config["logging"]["format"])
    for handler in logging.getLogger().handlers:
        handler.addFilter(CorrelationIdFilter())

    parser = argparse.ArgumentParser(description="Checkout Mock - card payments with 3D Secure")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--host", default=server_config["host"], help="Bind host")
    parser.add_argument(
        "--service",
        choices=("gateway", "checkout"),
        default="gateway",
        help=f"Run the gateway API ({gateway_port}) or drive one demo checkout against it",
    )
    parser.add_argument("--base-url", default=config["client"]["base_url"], help="Gateway URL for --service checkout")
    parser.add_argument("--card", default="4508034508034509", help="Test card number for --service checkout")
    parser.add_argument("--otp", default=str(config["gateway"]["challenge_code"]), help="3DS code to submit")
    parser.add_argument("--amount", default="1500.00", help="Order amount")
    parser.add_argument("--email", default="demo@test.com", help="Buyer email")
    parser.add_argument("--product", default="Wireless Headphones", help="Product name")
    args = parser.parse_args()

    if args.service == "checkout":
        sys.exit(_run_demo_checkout(args, args.base_url))

    from checkout_mock.gateway_service import create_app

    uvicorn.run(create_app(config), host=args.host, port=gateway_port)


if __name__ == "__main__":
    main()
