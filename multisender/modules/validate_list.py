import os
import logging

import questionary
from rich.console import Console
from rich.logging import RichHandler

from multisender.modules.multisend import render_preview, select_chain
from multisender.utils.executor import ExecutionMode, build_batch_call
from multisender.utils.fees import estimate_run_fee, format_fee_eth
from multisender.utils.batching import plan_batches
from multisender.utils.helper import FileHelper, Web3Helper
from multisender.utils.recipients import (
    AssetMode, ParsedBatchRequest, build_request, csv_to_text, is_valid_address, parse_recipients, serialize_entries,
)

console = Console()


def main():
    """Check a recipient list without sending anything; optionally quote the ETH network fee."""
    logging.basicConfig(level=logging.INFO, handlers=[RichHandler(console=console)])
    chain_config = select_chain()

    path = questionary.path("Recipient list (.txt or .csv):", default=str(chain_config.RECIPIENTS_FILE)).ask() or ""
    if not os.path.exists(path):
        console.log(f"[bold red]File not found: {path}[/bold red]")
        return
    text = FileHelper.read_text(path)
    if path.lower().endswith(".csv"):
        text = csv_to_text(text)
    else:
        text = "\n".join(FileHelper._strip_comment(line) for line in text.splitlines())

    mode_label = questionary.select("Asset to send:", choices=["ETH", "ERC20 token"]).ask()
    if mode_label == "ETH":
        request = build_request(text, AssetMode.ETH)
    else:
        decimals = int(questionary.text("Token decimals:", default="18").ask() or 18)
        # no token address offline, so the unit comes from the prompt
        request = ParsedBatchRequest(mode=AssetMode.ERC20, result=parse_recipients(text, AssetMode.ERC20, decimals),
                                     decimals=decimals)

    render_preview(request)
    if not request.result.ok or not request.result.recipients:
        return

    if request.result.decimals_ready and questionary.confirm("Write the normalized list next to the input?",
                                                             default=False).ask():
        out = os.path.splitext(path)[0] + ".normalized.txt"
        with open(out, "w", encoding="utf-8") as f:
            f.write(serialize_entries(request.result.entries, request.unit_decimals) + "\n")
        console.log(f"[green]Wrote {out}[/green]")

    if request.mode is not AssetMode.ETH:
        return
    if not questionary.confirm("Estimate the network fee (needs RPC)?", default=False).ask():
        return
    sender = (questionary.text("Sender address:").ask() or "").strip()
    if not is_valid_address(sender):
        console.log(f"[red]Invalid sender address: {sender}[/red]")
        return

    helper = Web3Helper(chain_config, console=console)
    calls = [build_batch_call(request, b, ExecutionMode.STRICT, chain_config.MULTISENDER_ADDRESS,
                              builder_codes=chain_config.BUILDER_CODES)
             for b in plan_batches(request.result.entries)]
    est = estimate_run_fee(helper, chain_config, sender, calls, AssetMode.ETH)
    console.print(f"[bold]Estimated network fee:[/bold] {format_fee_eth(est.total)}"
                  + (f" ({est.reason})" if est.reason else ""))


if __name__ == "__main__":
    main()
