#!/usr/bin/env python3
"""
AgentPay Buyer CLI
Browse the merchant catalog and buy products with x402 payments.

Usage:
    python -m agentpay.buyer.cli products [--query tv] [--max-price 5] [--json]
    python -m agentpay.buyer.cli buy <product_id> [--yes] [--json]
    python -m agentpay.buyer.cli lookup <payment_reference> [--json]
"""

import argparse
import asyncio
import json as json_lib
import sys
from decimal import Decimal
from typing import Optional, Union

import httpx
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from agentpay.buyer.catalog import CatalogClient
from agentpay.buyer.client import ResourceClient
from agentpay.buyer.fused import FetchWithPaymentClient
from agentpay.buyer.orchestrator import PurchaseOrchestrator, PurchaseOutcome
from agentpay.config import BuyerConfig, get_buyer_config
from agentpay.errors import ConfigError, TransportError
from agentpay.events import EventBus, PaymentEvent, PaymentPhase
from agentpay.logs import configure_logging
from agentpay.payments.preparer import PaymentProofPreparer
from agentpay.payments.signing import LocalAccountSigner

console = Console()

PHASE_MESSAGES = {
    PaymentPhase.REQUEST_SENT: "[cyan]Requesting resource...[/cyan]",
    PaymentPhase.PAYMENT_REQUIRED: "[yellow]Payment required[/yellow]",
    PaymentPhase.PREPARING_PAYMENT: "[cyan]Signing payment authorization...[/cyan]",
    PaymentPhase.PAYMENT_SENT: "[cyan]Submitting payment...[/cyan]",
}


class BuyerCLI:
    """Wires config, signer, catalog and client together for one CLI run"""

    def __init__(
        self,
        config: Optional[BuyerConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        json_output: bool = False,
    ):
        self.config = config or get_buyer_config()
        self.client = http_client or httpx.AsyncClient(timeout=self.config.request_timeout)
        self.json_output = json_output
        self.events = EventBus()
        self.catalog = CatalogClient(self.client, self.config.merchant_url)
        if not json_output:
            self.events.subscribe(self._show_phase)

    def _output(self, data: dict, human_message: str = None):
        """Output data in JSON or human-readable format"""
        if self.json_output:
            print(json_lib.dumps(data, indent=2, default=str))
        elif human_message:
            console.print(human_message)

    def _show_phase(self, event: PaymentEvent):
        message = PHASE_MESSAGES.get(event.phase)
        if message:
            console.print(message)

    def build_purchase_client(self) -> Union[ResourceClient, FetchWithPaymentClient]:
        """Local key signing when a private key is set, otherwise the fused service"""
        if self.config.buyer_private_key:
            signer = LocalAccountSigner(self.config.buyer_private_key)
            return ResourceClient(
                http_client=self.client,
                preparer=PaymentProofPreparer(signer),
                payer=signer.address,
                events=self.events,
                funding_link=self.config.funding_link,
            )
        if self.config.fetch_with_payment_url and self.config.buyer_address:
            return FetchWithPaymentClient(
                http_client=self.client,
                service_url=self.config.fetch_with_payment_url,
                api_key=self.config.fetch_api_key,
                payer=self.config.buyer_address,
                events=self.events,
                funding_link=self.config.funding_link,
            )
        raise ConfigError(
            "Set BUYER_PRIVATE_KEY, or FETCH_WITH_PAYMENT_URL together with BUYER_ADDRESS"
        )

    async def products(self, query: Optional[str] = None, max_price: Optional[Decimal] = None):
        try:
            items = await self.catalog.list_products(query=query, max_price=max_price)
        except TransportError as e:
            self._output({"error": e.message}, f"[red]{e.message}[/red]")
            return

        if self.json_output:
            self._output({"products": [p.model_dump() for p in items]})
            return
        if not items:
            console.print("[yellow]No products found[/yellow]")
            return

        table = Table(title="Products", show_header=True, header_style="bold magenta")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Name", style="white")
        table.add_column("Category", style="green")
        table.add_column("Price (USDC)", justify="right", style="yellow")
        for product in items:
            table.add_row(product.id, product.name, product.category, f"${product.price}")
        console.print(table)

    async def buy(self, product_id: str, assume_yes: bool = False) -> PurchaseOutcome:
        orchestrator = PurchaseOrchestrator(
            catalog=self.catalog,
            client=self.build_purchase_client(),
            merchant_url=self.config.merchant_url,
            events=self.events,
        )

        confirmed = assume_yes
        if not assume_yes and not self.json_output:
            answer = console.input(f"Buy [cyan]{product_id}[/cyan]? Type 'yes' to confirm: ")
            confirmed = answer.strip().lower() in ("y", "yes")

        outcome = await orchestrator.purchase(product_id, confirmed=confirmed)
        self.display_outcome(outcome)
        return outcome

    def display_outcome(self, outcome: PurchaseOutcome):
        if self.json_output:
            self._output(outcome.to_dict())
            return

        if outcome.success:
            name = outcome.product.name if outcome.product else outcome.reference
            console.print(Panel(
                f"[green]Purchased {name}[/green]\n"
                f"Payment reference: [cyan]{outcome.payment_reference or '-'}[/cyan]\n"
                "[dim]Reference is provisional until finalized (see 'lookup')[/dim]",
                title="Purchase complete"
            ))
        elif outcome.funding_required:
            console.print(Panel(
                "[yellow]Wallet balance is too low for this purchase.[/yellow]\n"
                f"Add funds: [link]{outcome.funding_link or '-'}[/link]",
                title="Funding required"
            ))
        elif outcome.retryable:
            console.print(f"[red]Temporary failure ({outcome.error_code}): {outcome.error.message}[/red]")
            console.print("[dim]Nothing was charged twice; it is safe to try again.[/dim]")
        else:
            console.print(f"[red]Purchase failed ({outcome.error_code}): {outcome.error.message}[/red]")

    async def lookup(self, reference: str):
        try:
            response = await self.client.get(f"{self.config.merchant_url}/api/payments/{reference}")
        except httpx.HTTPError as e:
            self._output({"error": str(e)}, f"[red]Lookup failed: {e}[/red]")
            return

        if response.status_code == 404:
            self._output({"reference": reference, "status": "unknown"}, "[yellow]Unknown payment reference[/yellow]")
            return
        if response.status_code >= 400:
            self._output(
                {"error": response.text, "status_code": response.status_code},
                f"[red]Lookup failed ({response.status_code})[/red]"
            )
            return

        data = response.json()
        self._output(
            data,
            f"Status: [green]{data.get('status')}[/green]  tx: [cyan]{data.get('txHash') or '-'}[/cyan]"
        )

    async def close(self):
        await self.client.aclose()


def main():
    parser = argparse.ArgumentParser(
        prog="agentpay-buyer",
        description="AgentPay buyer - pay-per-request purchases over x402",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  agentpay-buyer products --query tv
  agentpay-buyer buy tv-oled-55 --yes
  agentpay-buyer lookup sim_3f2a...
        """
    )
    parser.add_argument("--json", "-j", action="store_true", help="Output in JSON format (for scripting/agents)")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    products_parser = subparsers.add_parser("products", help="List products")
    products_parser.add_argument("--query", "-q", help="Search text")
    products_parser.add_argument("--max-price", type=Decimal, help="Max price in USDC")

    buy_parser = subparsers.add_parser("buy", help="Buy a product")
    buy_parser.add_argument("product_id", help="Product ID")
    buy_parser.add_argument("--yes", "-y", action="store_true", help="Confirm without prompting")

    lookup_parser = subparsers.add_parser("lookup", help="Check a payment reference")
    lookup_parser.add_argument("reference", help="Payment reference")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    config = get_buyer_config()
    configure_logging(config.log_level, config.log_format)

    async def run() -> int:
        cli = BuyerCLI(config=config, json_output=args.json)
        try:
            if args.command == "products":
                await cli.products(query=args.query, max_price=args.max_price)
            elif args.command == "buy":
                outcome = await cli.buy(args.product_id, assume_yes=args.yes)
                return 0 if outcome.success else 2
            elif args.command == "lookup":
                await cli.lookup(args.reference)
            return 0
        except ConfigError as e:
            console.print(f"[red]Configuration error: {e.message}[/red]")
            return 1
        finally:
            await cli.close()

    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
