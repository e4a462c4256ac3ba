"""Entry point for phxchat."""

import sys

import click

from phxchat import __version__
from phxchat.app import PhxChatApp


@click.command()
@click.version_option(__version__, prog_name="phxchat")
@click.argument("url")
@click.argument("token")
def main(url: str, token: str) -> None:
    """Chat in Phoenix message threads at URL, authenticating with TOKEN."""
    app = PhxChatApp(url, token)
    app.run()
    sys.exit(app.return_code or 0)


if __name__ == "__main__":
    main()
