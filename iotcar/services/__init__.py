# Service layer for the IoT Car Controller
# - device_client: HTTP transport for the car's /connect and /move endpoints
# - dispatcher:    command sender and the held-control dispatch loop
# - events:        notifier events and the channel that delivers them
