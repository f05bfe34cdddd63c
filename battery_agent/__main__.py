from battery_agent.main import run

run()
