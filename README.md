# modmqttd

The core of a Modbus to MQTT gateway. The package builds network and broker
settings from already parsed configuration data. It works out which Modbus
registers to poll and how often, and runs a background worker for each
Modbus network. The worker polls registers, retries failed commands, keeps
the configured delays between commands and puts the results on a queue for
the MQTT side.

It has no dependencies outside the standard library.

## Installation

```
pip install .
```

The tests need the `test` extra:

```
pip install .[test]
pytest
```

## What is inside

- `modmqttd.modbus_types`: the register types (`RegisterType`), the publish
  modes (`PublishMode`) and address ranges (`ModbusAddressRange`,
  `ModbusSlaveAddressRange`). Address ranges can be merged and checked for
  overlap.
- `modmqttd.modbus_messages`: the messages passed between the MQTT side and
  the Modbus workers. `MsgRegisterPollSpecification.merge` joins overlapping
  poll ranges and `group` joins consecutive ones.
- `modmqttd.config`: `ModbusNetworkConfig` and `MqttBrokerConfig`, built from
  mappings with `from_config`, and helpers such as `parse_duration`
  (`500`, `"500ms"`, `"1s"`, `"2min"`, `"1h"`). Invalid settings raise
  `ConfigurationError`.
- `modmqttd.modbus_slave`: `ModbusSlaveConfig`, the per-slave delays and
  retry counts.
- `modmqttd.conv_name_parser`: `parse_converter_spec` splits converter
  specifications such as `std.divide(10, 2)` into plugin, converter and
  arguments.
- `modmqttd.default_command_converter`: `DefaultCommandConverter` turns MQTT
  command payloads into register values: a single integer, or a JSON array
  when more than one register is written.
- `modmqttd.exprconv`: `ExprConverter`, reached through
  `get_converter("evaluate")`. It evaluates an arithmetic expression over
  the register variables `R0` to `R9`, with the helpers `int32`, `uint32`,
  `flt32`, `flt32be` and `int16` and an optional output precision.
- `modmqttd.commands`: register poll and write commands, and the abstract
  `ModbusContext` interface that a Modbus connection must implement.
- `modmqttd.scheduler`, `modmqttd.request_queues`, `modmqttd.executor` and
  `modmqttd.watchdog`: these decide when each register is polled and in what
  order reads and writes go to the slaves. They also handle retries and
  detect when a reconnect is needed.
- `modmqttd.modbus_thread`: `ModbusThread` and `ModbusClient`, which run one
  Modbus network in a background thread and talk to it through queues.
- `modmqttd.log`: `init_logging` and `Severity`, for log output to stderr
  at the gateway's severity levels.

## Examples

```python
from modmqttd.conv_name_parser import parse_converter_spec
from modmqttd.exprconv import get_converter

spec = parse_converter_spec('expr.evaluate("R0 * 2")')
conv = get_converter(spec.converter)
conv.set_args(spec.args)
print(conv.to_mqtt([10]))  # "20"
```

```python
from modmqttd.config import ModbusNetworkConfig

cfg = ModbusNetworkConfig.from_config({
    "name": "tcptest",
    "address": "localhost",
    "port": 501,
    "response_timeout": "200ms",
})
print(cfg.name, cfg.address, cfg.port, cfg.response_timeout)
```

## What it does not do

- It has no MQTT client. It does not connect to a broker, and it does not
  publish or subscribe. `MqttBrokerConfig` only holds the broker settings.
- It does not talk to Modbus devices by itself. `ModbusContext` is an
  interface. `ModbusClient` and `ModbusThread` take a factory that supplies
  the implementation for each network.
- It does not read configuration files. The `from_config` methods take
  mappings that have already been parsed.
- It has no command-line program or daemon to run.