"""CLI entry point for cloudscribe - fee preview, local cart and checkout."""

from __future__ import annotations

import logging
import sys
import webbrowser
from decimal import Decimal

import click

from cloudscribe.cart import DEFAULT_CART_PATH, Cart
from cloudscribe.checkout import CheckoutOrchestrator, HttpFunctionInvoker
from cloudscribe.config import DEFAULT_CURRENCY
from cloudscribe.errors import CheckoutError
from cloudscribe.fees import calculate_fees
from cloudscribe.schema import Buyer, CartItem

_cart_file_option = click.option(
    "--cart-file",
    type=click.Path(dir_okay=False),
    default=str(DEFAULT_CART_PATH),
    envvar="CLOUDSCRIBE_CART_FILE",
    show_default=True,
    help="Where the cart is kept",
)


def _fail(e: Exception):
    click.secho(f"Error: {e}", fg="red", err=True)
    sys.exit(1)


def _money(amount: Decimal, currency: str = DEFAULT_CURRENCY) -> str:
    return f"{currency} {amount:,.2f}"


# -- CLI group --------------------------------------------------------------------------


@click.group()
@click.version_option(version="0.1.0", prog_name="cloudscribe")
@click.option("-v", "--verbose", is_flag=True, hidden=True, help="Verbose output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool):
    """Preview marketplace fees, manage a local cart, and start checkouts."""
    if verbose:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")


# -- fees ------------------------------------------------------------------------------


@cli.command()
@click.argument("subtotal")
@click.option("--currency", default=DEFAULT_CURRENCY, show_default=True)
def fees(subtotal, currency):
    """Show the platform fee and seller amount for SUBTOTAL."""
    try:
        breakdown = calculate_fees(subtotal, currency)
    except CheckoutError as e:
        _fail(e)

    click.echo(f"Subtotal:      {_money(breakdown.subtotal, currency)}")
    click.echo(f"Platform fee:  {_money(breakdown.platform_fee, currency)} (10%)")
    click.echo(f"Seller amount: {_money(breakdown.seller_amount, currency)}")
    click.echo(f"Charged:       {breakdown.amount_minor} minor units")


# -- cart ------------------------------------------------------------------------------


@cli.group()
@_cart_file_option
@click.pass_context
def cart(ctx: click.Context, cart_file: str):
    """Manage the local shopping cart."""
    ctx.obj = Cart(cart_file)


@cart.command("add")
@click.argument("item_id")
@click.argument("name")
@click.argument("price")
@click.option("-q", "--quantity", type=int, default=1, show_default=True)
@click.option("--description", default=None)
@click.pass_obj
def cart_add(cart_obj: Cart, item_id, name, price, quantity, description):
    """Add ITEM_ID to the cart (or bump its quantity)."""
    try:
        item = CartItem(
            id=item_id, name=name, price=price, quantity=quantity, description=description
        )
    except ValueError as e:
        _fail(e)
    added = cart_obj.add_item(item)
    click.echo(f"{added.name} x{added.quantity} in cart")


@cart.command("remove")
@click.argument("item_id")
@click.pass_obj
def cart_remove(cart_obj: Cart, item_id):
    """Remove ITEM_ID from the cart."""
    if not cart_obj.remove_item(item_id):
        click.secho(f"{item_id} is not in the cart", fg="yellow")
        return
    click.echo(f"Removed {item_id}")


@cart.command("update")
@click.argument("item_id")
@click.argument("quantity", type=int)
@click.pass_obj
def cart_update(cart_obj: Cart, item_id, quantity):
    """Set the quantity of ITEM_ID. Zero or less removes it."""
    if cart_obj.get(item_id) is None:
        click.secho(f"{item_id} is not in the cart", fg="yellow")
        return
    updated = cart_obj.update_quantity(item_id, quantity)
    if updated is None:
        click.echo(f"Removed {item_id}")
    else:
        click.echo(f"{updated.name} x{updated.quantity}")


@cart.command("show")
@click.pass_obj
def cart_show(cart_obj: Cart):
    """List cart contents with the fee split."""
    if not cart_obj:
        click.echo("Cart is empty.")
        return

    for item in cart_obj.items:
        click.echo(
            f"  {item.id:<20} {item.name:<30} {item.quantity:>3} x {item.price:>10,.2f}"
            f"  = {item.line_total:>12,.2f}"
        )
    breakdown = calculate_fees(cart_obj.subtotal)
    click.echo(f"\n{cart_obj.item_count} item(s), subtotal {_money(breakdown.subtotal)}")
    click.echo(f"  includes platform fee {_money(breakdown.platform_fee)}")


@cart.command("clear")
@click.pass_obj
def cart_clear(cart_obj: Cart):
    """Empty the cart."""
    cart_obj.clear()
    click.echo("Cart cleared.")


# -- checkout --------------------------------------------------------------------------


@cli.command()
@_cart_file_option
@click.option(
    "--functions-url",
    envvar="CLOUDSCRIBE_FUNCTIONS_URL",
    default="http://127.0.0.1:8080/functions/v1",
    show_default=True,
    help="Base URL of the deployed functions",
)
@click.option("--token", envvar="CLOUDSCRIBE_ACCESS_TOKEN", default="", help="Access token")
@click.option("--email", envvar="CLOUDSCRIBE_EMAIL", default=None, help="Buyer email")
@click.option("--product-id", default=None, help="Buy one product instead of the cart")
@click.option("--price", default=None, help="Unit price of --product-id")
@click.option("-q", "--quantity", type=int, default=1, show_default=True)
@click.option("--origin", default="", help="Origin the gateway should redirect back to")
@click.option("--browser/--no-browser", default=True, help="Open the hosted checkout page")
@click.option("--complete", is_flag=True, help="Payment finished: clear the cart and exit")
def checkout(
    cart_file, functions_url, token, email, product_id, price, quantity, origin, browser, complete
):
    """Start a hosted checkout for the first cart line (or --product-id)."""
    orchestrator = CheckoutOrchestrator(
        HttpFunctionInvoker(functions_url, token),
        redirect=webbrowser.open if browser else None,
        cart=Cart(cart_file),
    )
    if complete:
        orchestrator.complete()
        click.echo("Cart cleared.")
        return

    user = Buyer(id=email, email=email) if email else None
    try:
        result = orchestrator.checkout(
            user, product_id=product_id, price=price, quantity=quantity, origin=origin
        )
    except CheckoutError as e:
        _fail(e)

    click.echo(f"Reference:     {result.reference}")
    click.echo(f"Total:         {_money(result.fees.subtotal, result.fees.currency)}")
    click.echo(f"Platform fee:  {_money(result.fees.platform_fee, result.fees.currency)}")
    if result.checkout_url:
        click.echo(f"Checkout URL:  {result.checkout_url}")
    if not result.redirected:
        click.secho("Open the checkout URL to pay.", fg="yellow")


if __name__ == "__main__":
    cli()
