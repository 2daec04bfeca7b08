# traefik-proxmox

Builds Traefik dynamic configuration from a Proxmox VE cluster.

The provider polls the Proxmox API, looks at every running virtual machine
and LXC container on every node, and reads Traefik labels from the guest's
*description* field. Each line of the form `traefik.<key>=<value>` becomes a
label (surrounding spaces and double quotes are trimmed); guests with
`traefik.enable=true` get HTTP routers and services in the generated
configuration.

## Labels in the guest description

```
traefik.enable=true
traefik.http.routers.web.rule=Host(`web.example.com`)
traefik.http.routers.web.entrypoints=websecure
traefik.http.routers.web.tls.certresolver=letsencrypt
traefik.http.services.web.loadbalancer.server.port=8080
```

Supported router labels: `rule`, `service`, `entrypoints` (or the single
`entrypoint`), `middlewares`, `priority`, `tls`, `tls.certresolver`,
`tls.domains` (comma separated), `tls.options`.

Supported service labels (under `loadbalancer`): `server.url`,
`server.scheme`, `server.port`, `server.ip`, `passhostheader`,
`healthcheck.path`, `healthcheck.interval`, `healthcheck.timeout`,
`sticky.cookie.name`, `sticky.cookie.secure`, `sticky.cookie.httponly`,
`responseforwarding.flushinterval`.

Without explicit names, a router and a service named `<guest-name>-<vmid>`
are created. A router points at the service named by its `service` label,
otherwise at the first service of the guest; its priority defaults to 1 and
its rule to ``Host(`<guest-name>`)``.

The server URL is, in order of preference: the `server.url` label; the
`server.ip` label; the guest address found through the QEMU guest agent (the
second non-loopback address on `eth0`); and finally `<guest-name>.<node>`.
The port is `server.port`, or 80 (443 when `server.scheme` is `https`).

## Using it from Python

```python
from traefik_proxmox.provider import Provider, create_config

config = create_config()            # poll interval 30s, SSL checks on, "info" logging
config.api_endpoint = "https://pve.example.com:8006"
config.api_token_id = "automation@pve!traefik"
config.api_token = "token"

provider = Provider(config, "proxmox")
provider.init()
provider.provide(lambda configuration: print(configuration.to_json()))
...
provider.stop()
```

Creating a `Provider` validates the configuration and asks the cluster for
its version; a missing setting or a poll interval below five seconds raises
`traefik_proxmox.provider.ConfigError`, a failed API call raises
`traefik_proxmox.client.ApiError`. The poll interval is written like `30s`,
`1m30s` or `1.5m` (`parse_duration` reads it). A ready
`traefik_proxmox.client.ProxmoxClient` may be passed as the third argument.

`provide` starts polling in a background thread and hands a fresh
`Configuration` to the sink on every poll; `update_configuration` does one
poll at once; `stop` ends the polling. `Configuration.to_dict()` and
`to_json()` give the routers and services under `http`, with empty `tcp`,
`udp` and `tls` sections.

To build a configuration from already collected services, call
`traefik_proxmox.configuration.generate_configuration` with a mapping of
node name to a list of `traefik_proxmox.models.Service`.

With `api_logging` set to `debug`, each request and response is logged
through the standard `logging` module.

## What it does not do

There is no command-line program and no server: the package is a library.
It does not talk to Traefik itself; what happens to each `Configuration`
is up to the sink you pass to `provide`. Only HTTP routers and services are
generated; TCP, UDP and TLS store sections are always empty.