"""支持 python -m nene 方式运行。"""

from nene.cli.commands import app

if __name__ == "__main__":
    app()
