# lanchat

`lanchat` is a small group chat over TCP. You run one server and several clients.

- The room holds a limited number of clients at once. The default is 2. Anyone who connects after that is put in a waiting queue and told so. When someone leaves, the first person in the queue is let in.
- Each client is given a display colour in a `COLOR:<n>` message.
- A newcomer receives the chat history so far.
- Join messages, leave messages and chat lines (`name: text`) go to everyone else in the room. They are also added to the history.

Every message on the wire is UTF-8 text followed by one NUL byte.

## Installation

```
pip install .
```

## Running the chat

Start the server:

```
lanchat-server
```

Options:

| Option | Default | Meaning |
| --- | --- | --- |
| `--host` | `0.0.0.0` | Address to listen on. |
| `--port` | `12345` | Port to listen on. |
| `--max-clients` | `2` | How many clients the room holds at once. |
| `--clients` | `3` | How many `lanchat.client` processes to start alongside the server. On Windows each opens in its own console. Use `--clients 0` to start none. |

Stop the server with Ctrl+C.

Connect a client:

```
lanchat-client
```

Options:

| Option | Default | Meaning |
| --- | --- | --- |
| `--host` | `127.0.0.1` | Server address. |
| `--port` | `12345` | Server port. |
| `--delay` | `2.0` | Seconds to wait before connecting. |

The client works like this:

- It first asks for your name.
- After that, every line you type is sent to the room. Type `exit` to leave.
- Received text is shown in the assigned colour when the output is a terminal, using ANSI escapes.
- If the server goes away, the client prints a notice.

## Client launcher

```
lanchat-pipeserver
```

This command does the following:

- It picks a random lifetime for each client. About 30% get `0`, which means infinite; the rest get 5 to 17 seconds.
- It starts one client process per lifetime, with the lifetime appended as the last argument.
- It listens for those clients on TCP.
- Each client that connects takes a free slot. It reports a 4-byte little-endian integer: `1` means it started successfully, anything else is logged as an error.
- All events are logged with an `HH:MM:SS.mmm` timestamp.

Type a key and press Enter to shut it down. After shutdown it waits `--linger` seconds before exiting.

Options:

| Option | Default | Meaning |
| --- | --- | --- |
| `--host` | `127.0.0.1` | Address to listen on. |
| `--port` | `12346` | Port to listen on. |
| `--instances` | `3` | Number of clients and slots. |
| `--command` | `Client.exe` | Client command; the lifetime is appended. |
| `--linger` | `10.0` | Seconds to wait after shutdown. |

## Using it from Python

```python
import threading
from lanchat.server import ChatServer

server = ChatServer("127.0.0.1", 12345, 2)
server.start()  # returns the bound (host, port)
threading.Thread(target=server.serve_forever, daemon=True).start()
print(server.client_count(), server.queue_size(), server.history())
server.shutdown()
```

`lanchat.server.launch_clients(count, command)` starts client processes.

`lanchat.client.ChatClient` wraps a connected socket and provides:

- `handle` — apply one received message;
- `receive_loop` — read and show messages until the connection ends;
- `send` — send one message;
- `close` — close the connection.

`lanchat.pipeserver` provides:

- `PipeServer`, with `start`, `run`, `stop` and `handle_report`;
- `generate_lifetimes`, `describe_lifetime`, `launch_client` and `format_timestamp`.

The wire format lives in `lanchat.protocol`:

- `encode_frame` builds a frame and `split_frames` splits received bytes into frames.
- `color_frame` builds a colour frame.
- `color_for` picks a client's colour.
- `parse_message` turns a message into a `ColorMessage` or a `TextMessage`.

## What this package does not do

No client program that speaks the launcher's report protocol is included. `lanchat-pipeserver` by default runs `Client.exe`, which this package does not provide. `lanchat-client` is the chat client and does not send start-up reports. Pass your own program with `--command`.

The chat has no authentication, no persistence of history beyond the running server, and no encryption.