"""To chat with a running server from the terminal,
run: python -m src.livechat.main.chat_main
"""
import asyncio
import logging
import mimetypes
import traceback
from pathlib import Path
import hydra
import logfire
from omegaconf import DictConfig
from src.livechat.chat.chat_client import ChatClient
from src.livechat.chat.errors import ChatError
from src.livechat.chat.gateway import HttpMessageGateway
from src.livechat.chat.transport import WebSocketTransportChannel
from src.livechat.models.chat import ChatMessage, Participant
from src.livechat.utils.logging import setup_logging

logger = logging.getLogger(__name__)
setup_logging()
logfire.configure(send_to_logfire='if-token-present')


class ChatTerminal:
    def __init__(self, cfg: DictConfig):
        self.cfg = cfg
        gateway = HttpMessageGateway(
            cfg.client.server_url, cfg.client.request_timeout
        )
        transport = WebSocketTransportChannel(
            cfg.client.ws_url, cfg.client.open_timeout
        )
        self.client = ChatClient.from_config(cfg, gateway, transport)
        self.client.machine.add_listener(self.on_mode_change)
        self.client.presence.subscribe(self.on_presence)
        self.printed = 0

    def on_mode_change(self, session, old_mode, new_mode) -> None:
        print(f"\n[System]: chat mode {old_mode.value} -> {new_mode.value}")

    def on_presence(self, online: bool) -> None:
        print(f"\n[System]: admin is {'online' if online else 'offline'}")

    def print_message(self, message: ChatMessage) -> None:
        if message.attachment is not None:
            content = f"<{message.attachment.name}> {message.attachment.url or ''}"
        else:
            content = message.body
        print(f"\n{message.sender.value.capitalize()}: {content}")

    def print_new_messages(self) -> None:
        """Print whatever reached the timeline since the last call"""
        messages = self.client.timeline
        for message in messages[self.printed:]:
            self.print_message(message)
        self.printed = len(messages)

    async def send_file(self, path: str) -> None:
        file_path = Path(path).expanduser()
        content = await asyncio.to_thread(file_path.read_bytes)
        mime_type = mimetypes.guess_type(file_path.name)[0] or "application/octet-stream"
        await self.client.send_attachment(file_path.name, mime_type, content)

    async def run(self) -> None:
        """Run the terminal chat"""
        try:
            name = (await asyncio.to_thread(input, "Name: ")).strip()
            email = (await asyncio.to_thread(input, "Email: ")).strip()
            await self.client.start(
                Participant(name=name, email=email), session_key=email
            )
            print("\nWelcome to the Live Chat terminal!")
            print("Commands:")
            print("- 'quit' or 'exit': End session")
            print("- '/file <path>': Send an attachment")
            print("- empty line: Show new messages")
            self.print_new_messages()

            while True:
                try:
                    query = (await asyncio.to_thread(input, "\nUser: ")).strip()

                    if query.lower() in ['quit', 'exit']:
                        print("\nGoodbye!")
                        break
                    elif query.startswith("/file "):
                        await self.send_file(query[len("/file "):].strip())
                    elif query:
                        await self.client.send_text(query)
                    self.print_new_messages()

                except KeyboardInterrupt:
                    print("\nGoodbye!")
                    break
                except ChatError as e:
                    print(f"\n[System]: {e.detail}")
                except Exception as e:
                    logger.error(f"Error processing input: {e}")
                    print(f"\nError: {e}")
                    traceback.print_exc()
        finally:
            await self.client.close()


@hydra.main(
    version_base=None,
    config_path="../../../config",
    config_name="config")
def main(cfg) -> None:

    async def async_main():
        terminal = ChatTerminal(cfg)
        await terminal.run()

    asyncio.run(async_main())


if __name__ == "__main__":
    main()
