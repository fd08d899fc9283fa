from prometheus_client import Counter, Gauge

READINGS_RECEIVED_TOTAL = Counter(
    'readings_received_total',
    'Total number of sensor readings ingested from the field node'
)

COMMANDS_RECEIVED_TOTAL = Counter(
    'commands_received_total',
    'Total number of valve commands submitted by the dashboard'
)

API_IGNORED_FIELDS_TOTAL = Counter(
    'api_ignored_fields_total',
    'Total number of request fields ignored because of a wrong type'
)

HISTORY_LINES_SKIPPED_TOTAL = Counter(
    'history_lines_skipped_total',
    'Total number of unreadable history lines skipped while reading'
)

HISTORY_WRITE_FAILURES_TOTAL = Counter(
    'history_write_failures_total',
    'Total number of history append failures'
)

COMMAND_FILE_RECOVERIES_TOTAL = Counter(
    'command_file_recoveries_total',
    'Total number of corrupt command files reset to the default command'
)

SENSOR_TEMPERATURE = Gauge(
    'sensor_temperature_celsius',
    'Last reported temperature'
)

SENSOR_PRESSURE = Gauge(
    'sensor_pressure_bar',
    'Last reported pressure'
)

VALVE_COMMAND_STATE = Gauge(
    'valve_command_state',
    'Commanded valve state (1 = open)',
    ['valve']
)
