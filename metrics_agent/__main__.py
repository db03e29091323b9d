"""
Allow running the agent as a module: python -m metrics_agent
"""
from metrics_agent.cli import main


if __name__ == '__main__':
    main()
