from auctionhouse import create_app

app = create_app()
