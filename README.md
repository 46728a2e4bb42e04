# hypeman

A Python client for the hypeman API. It has these parts:

- `hypeman.requestconfig` builds and sends requests, with retries, timeouts and middleware.
- `hypeman.options` holds the request options.
- `hypeman.resources` reports host resources: CPU, memory, disk, network and GPU.
- `hypeman.volumes` manages volumes: create, list, get and delete.
- `hypeman.cp_to` and `hypeman.cp_from` copy files and directories to and from running
  instances over a WebSocket. They use `hypeman.cpconfig` and `hypeman.ws`.

## Installation

```
pip install hypeman
```

To run the tests, install the `test` extra and run pytest:

```
pip install "hypeman[test]"
pytest
```

## Request options

A request option is a callable that changes a `RequestConfig`. Options are applied in
the order given. Build them with the functions in `hypeman.options`:

```python
from hypeman.options import (
    with_api_key,
    with_base_url,
    with_header,
    with_max_retries,
    with_request_timeout,
)

options = [
    with_base_url("http://localhost:8080/"),
    with_api_key("placeholder"),
    with_max_retries(3),
    with_request_timeout(10),
    with_header("X-Trace", "abc"),
]
```

The options, grouped by what they change:

- **Base URL**
  - `with_base_url(base)` sets the base URL. A trailing slash is added to its path when the path has none.
  - `with_environment_production()` sets the default base URL, `http://localhost:8080/`. A URL set with `with_base_url` takes precedence over it.
- **Authentication**
  - `with_api_key(value)` stores the key and sends `authorization: Bearer <value>`.
- **Headers**
  - `with_header` sets a header.
  - `with_header_add` adds a header value.
  - `with_header_del` removes a header.
- **Query string**
  - `with_query` sets a query parameter.
  - `with_query_add` adds a query parameter value.
  - `with_query_del` removes a query parameter.
- **JSON body**
  - `with_json_set(key, value)` sets a value in a JSON body at a dotted path. Write a literal dot as `\.`. Numeric parts index arrays, and `-1` appends.
  - `with_json_del(key)` deletes the value at such a path.
- **Other request bodies**
  - `with_request_body(content_type, body)` sends bytes or a readable object as it is.
- **Transport**
  - `with_http_client(client)` sends requests through any object with an httpx-style `send`.
  - `with_middleware(*middlewares)` wraps each send. A middleware is called as `middleware(request, next)` and returns a response. The first middleware given runs outermost.
  - `with_request_timeout(seconds)` sets the timeout of each attempt.
- **Response**
  - `with_response_into(callback)` passes the final `httpx.Response` to `callback`. The callback receives `None` when the connection failed.
- **Logging**
  - `with_debug_log(logger)` logs full requests and responses at DEBUG level. When `logger` is `None` it uses the `hypeman` logger.

### Retries

`with_max_retries(retries)` sets the number of retries. A negative number raises
`ValueError`. By default a request is retried twice.

A request is retried in these cases:

- a connection error; timeouts are raised at once and never retried
- status 408, 409 or 429
- status 500 or above

The server can decide either way with an `x-should-retry: true` or `x-should-retry: false`
header. A body that cannot be replayed is never retried.

Before the next attempt the client waits as follows:

- It honours a `Retry-After-Ms` or `Retry-After` header shorter than a minute.
- Otherwise it backs off exponentially from half a second, up to eight seconds, with jitter.

### Results and errors

`execute_new_request(method, path, body, *options)` sends one request and returns the
response body:

- A JSON response is decoded into Python objects.
- An empty JSON body gives `None`.
- Any other response is returned as text.

A status of 400 or above raises `hypeman.requestconfig.APIError`. The error carries:

- `status_code`
- `request`
- `response`
- the decoded `body`
- the `raw` text

## Resources and volumes

The services take request options that apply to every call. Each call also accepts its
own options, which are applied after the service's options.

```python
from hypeman.resources import ResourceService
from hypeman.volumes import VolumeNewParams, VolumeService

resources = ResourceService(*options)
report = resources.get()
print(report.cpu.available, report.memory.effective_limit)
if report.gpu is not None:
    print(report.gpu.mode, report.gpu.used_slots, report.gpu.total_slots)

volumes = VolumeService(*options)
volume = volumes.new(VolumeNewParams(name="my-data-volume", size_gb=10, id="vol-data-1"))
for item in volumes.list():
    print(item.id, item.name, item.size_gb, item.created_at)
volumes.delete(volume.id)
```

`ResourceService.get` returns a `Resources` dataclass. Its fields are:

- per-resource `ResourceStatus` values: `cpu`, `disk`, `memory` and `network`
- a `DiskBreakdown`
- the list of `ResourceAllocation` values for each instance
- an optional `GPUResourceStatus`

Volumes are returned as `Volume` dataclasses. Their `created_at` is parsed into a
`datetime`. `VolumeService.get` and `VolumeService.delete` raise `ValueError` when the id
is empty.

In every model, fields the server sends that the model does not know are kept in
`extra_fields`.

## Copying files

Each file goes over its own WebSocket connection to `/instances/<id>/cp`. An `http` base
URL becomes `ws`, and an `https` base URL becomes `wss`.

```python
from hypeman.cpconfig import CpConfig
from hypeman.cp_to import CpToInstanceOptions, cp_to_instance
from hypeman.cp_from import CpFromInstanceOptions, cp_from_instance

cfg = CpConfig(base_url="http://localhost:8080", api_key="placeholder")

cp_to_instance(cfg, CpToInstanceOptions(
    instance_id="inst_123",
    src_path="./local-file.txt",
    dst_path="/app/file.txt",
))

cp_from_instance(cfg, CpFromInstanceOptions(
    instance_id="inst_123",
    src_path="/app/output.txt",
    dst_path="./downloads",
))
```

You can also pass the base URL and API key directly. Use `cp_to_instance_from_url` and
`cp_from_instance_from_url` for that.

`extract_cp_config(opts)` builds a `CpConfig` from the request options that the services
use. It raises `ValueError` when no base URL is configured.

### Copy options

- Directories are copied recursively.
- With `follow_links`, symbolic links are followed and directory cycles are skipped.
- With `archive`, the owner and group of each file are carried over where the platform allows it.
- `CpCallbacks` reports progress through three callbacks: `on_file_start(path, size)`, `on_progress(bytes_copied)` and `on_file_end(path)`.

### Errors and safety checks

Every failure raises `hypeman.cpconfig.CopyError`.

A copy from an instance must end with the server's final end marker. When the stream
closes without it, the copy fails.

Paths sent by the server are checked with `sanitize_path`. These are refused:

- absolute paths
- paths that escape the destination
- symbolic links whose target is absolute or leads upward

### Custom connections

Connections are opened by a `WsDialer`. The default dialer is `hypeman.ws.DefaultDialer`,
which uses websocket-client.

Any object with a `dial(url, headers)` method that returns a `WsConn` can be passed as
`dialer`. A `WsConn` has `write_message`, `read_message` and `close`. This is how the
copy protocol can run over another transport or a test double.

## What the package does not do

- It has no command-line program and no single client object. You build the services and
  copy functions yourself from request options.
- Only the resources and volumes endpoints and the copy protocol are covered. Instances,
  images, pushing images to the registry, health checks and the rest of the API are not
  wrapped.
- Creating a volume from a tar.gz archive is not supported. `VolumeService.new` sends only
  a JSON body.