from pool_payments.scheduler.main import run


if __name__ == "__main__":
    run()
