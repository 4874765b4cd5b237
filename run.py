import os
from scrapertrack import create_app

app = create_app()

if __name__ == '__main__':
    # Debug/reloader off by default; the reloader would start a second set of sweeper threads.
    debug_flag = os.environ.get('SCRAPERTRACK_DEBUG_SERVER', '0') == '1'
    port = int(os.environ.get('SCRAPERTRACK_PORT', '5000'))
    routes = sorted({r.rule for r in app.url_map.iter_rules()})
    print(f"[scrapertrack] Route count={len(routes)} sample={routes[:20]}")
    app.run(host='0.0.0.0', port=port, debug=debug_flag, use_reloader=debug_flag)
