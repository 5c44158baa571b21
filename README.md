# eggkit

Building blocks for small services and the tools that build and ship them:

- **HTTP clients** with timeouts, exponential-backoff retries on transport
  errors and 5xx responses, and an optional circuit breaker
  (`eggkit.clientx`, `eggkit.retry`).
- **Layered configuration** from environment variables and JSON, YAML or
  TOML files. Later sources win, and debounced updates are pushed to
  subscribers (`eggkit.sources`, `eggkit.manager`, `eggkit.builders`).
- **Typed binding** of configuration snapshots onto dataclasses, with
  defaults and duration parsing (`eggkit.binding`).
- **External tool runner** for `go`, `buf`, `flutter`, `docker`, `helm`
  and `kubectl` (`eggkit.toolrunner`).
- **CLI output helpers** with levels, colours, JSON mode, step
  indicators, confirmations and progress (`eggkit.ui`).

It requires Python 3.11 or later. It depends on `requests` and `pyyaml`.

## HTTP client

```python
from eggkit.clientx import (
    new_http_client,
    with_timeout,
    with_retry,
    with_circuit_breaker,
)

client = new_http_client(
    "https://api.example.com",
    with_timeout(5),
    with_retry(3),
    with_circuit_breaker(True),
)
response = client.request("GET", "/items")   # resolved against the base URL
client.close()
```

`HTTPClient` is also a context manager. The defaults are a 30 second
timeout, 3 retries starting at 100 ms backoff, and a circuit breaker that
opens after more than 5 consecutive failed calls and stays open for 60
seconds. Responses below 500 are returned at once; transport errors and
server errors are retried with doubling delays, and after the last
attempt the last response is returned or the last error raised. When the
circuit is open, calls fail fast with `eggkit.retry.CircuitOpenError`.

`eggkit.retry.RetryAdapter` and `eggkit.retry.CircuitBreaker` can also be
used on their own with any `requests.Session`.

## Configuration

```python
from eggkit.builders import default_manager
from eggkit.manager import BaseConfig
from eggkit.sources import NoopLogger

manager = default_manager(NoopLogger())

config = BaseConfig()
manager.bind(config)
print(config.get_http_port())   # ":8080" unless HTTP_PORT is set

unsubscribe = manager.on_update(lambda snapshot: print("reloaded", len(snapshot)))
...
unsubscribe()
manager.close()
```

The logger passed to a manager must have `debug`, `info` and `warn`
methods taking a message and keyword fields, and `error(err, msg,
**fields)`; `eggkit.sources.NoopLogger` is one that discards everything.

Sources are merged in order and empty values never override earlier
ones. `manager.value(key)` returns `None` for a missing key.
`build_sources` starts from the environment and adds a ConfigMap source
for each name found in `APP_CONFIGMAP_NAME`, `CACHE_CONFIGMAP_NAME` and
`ACL_CONFIGMAP_NAME`, in the namespace from `NAMESPACE`.
`build_file_sources` and `build_hybrid_sources` add `FileSource`s, which
poll their file and flatten nested keys with dots (`db.host`).

Your own settings bind the same way:

```python
from dataclasses import dataclass
from datetime import timedelta

from eggkit.binding import bind_to_struct, env_field

@dataclass
class AppConfig:
    service_name: str = env_field("SERVICE_NAME", "app")
    retries: int = env_field("RETRIES", "3")
    timeout: timedelta = env_field("TIMEOUT", "1h")

cfg = AppConfig()
bind_to_struct({"RETRIES": "5"}, cfg, None)
```

Supported field types are `str`, `int`, `float`, `bool` and `timedelta`
(parsed from strings such as `1h30m` or `250ms`). A value that cannot be
converted raises `eggkit.binding.BindError`.

## Running tools

```python
from eggkit.toolrunner import Runner, check_required_tools

runner = Runner("path/to/project", verbose=True)
runner.go_mod_init("example.com/module")
runner.docker_build("service:latest", "Dockerfile", ".")
```

A command that cannot start, times out or exits with a non-zero code
raises `eggkit.toolrunner.CommandError`, whose `result` holds the exit
code, output and duration. `check_required_tools()` raises
`eggkit.toolrunner.ToolNotFoundError` naming any of `go`, `buf`,
`docker`, `kubectl` and `helm` that are missing from `PATH`.

## CLI output

```python
from eggkit import ui

ui.set_verbose(True)
ui.info("Rendering %s", "charts")
ui.step(1, 3, "Building images")
if ui.confirm("Push to registry?"):
    ui.success("Pushed")
```

`ui.set_json_output(True)` switches messages to indented JSON objects
with `level`, `text` and `timestamp` fields. `ui.set_non_interactive(True)`
makes `confirm` answer yes without asking.

## What it does not do

- `K8sConfigMapSource` does not talk to a Kubernetes cluster: it logs
  and contributes no data, so the other sources keep their values.
- There is no command-line program; the modules are a library.
- `new_connect_client` only hands a configured `HTTPClient` and the base
  URL to the constructor you pass in; it adds no RPC interceptors.