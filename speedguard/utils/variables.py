'''
Define variables used across the entire application
'''


SPEED_THRESHOLD_KMH = 30.0   # km/h — background alert fires strictly above this
MPS_TO_KMH = 3.6             # m/s -> km/h

# Event channel names
LIVE_UPDATE_EVENT = "liveUpdate"
BACKGROUND_ALERT_EVENT = "backgroundAlert"

ALERT_TITLE = "Speed alert"
